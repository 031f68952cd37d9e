"""HTML and sitemap parsing."""
