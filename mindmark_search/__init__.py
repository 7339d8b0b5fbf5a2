"""Search synchronization and query layer for MindMark bookmarks."""
