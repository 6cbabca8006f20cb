"""Configuration — settings, module files and discovery."""
