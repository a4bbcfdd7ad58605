"""Link Tracker: fibre link fault tracking service."""
