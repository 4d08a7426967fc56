"""Settings, paths and logging helpers shared by the backup packages."""
