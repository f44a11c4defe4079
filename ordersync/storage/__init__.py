"""SQLite-backed order and checkpoint stores."""
