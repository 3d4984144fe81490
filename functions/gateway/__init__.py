"""
Gateway package for the case-management application.

A FastAPI service that stands between the browser application and its backing
stores: a secret broker, a profile key-value store, a JSON document store, an
image CDN proxy with signed delivery URLs, and a CAPTCHA verification relay.
"""
