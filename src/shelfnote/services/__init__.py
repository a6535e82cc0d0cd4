"""Service layer for the Shelfnote content store."""
