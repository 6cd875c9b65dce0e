"""Bootstrap and backup tooling for an OpenClaw buddy deployment."""
