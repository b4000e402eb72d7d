"""Release-notes resource graph: compile, link, validate, publish."""
