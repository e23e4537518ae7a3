"""Sprint Bot operator CLI."""
