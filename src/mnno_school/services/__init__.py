"""Feature services built on the data-access coordination layer."""
