"""Data models for the Shelfnote content store."""
