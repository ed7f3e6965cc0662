"""Domain services for the civic issue desk."""
