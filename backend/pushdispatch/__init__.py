"""Push notification dispatch and device token lifecycle service."""
