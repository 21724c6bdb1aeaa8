"""Asynchronous AI operation engine and its polling HTTP surface."""
