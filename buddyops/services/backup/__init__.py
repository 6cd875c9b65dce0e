"""Backup pipeline: archive the buddy's state and workspace, ship it to a bucket."""
