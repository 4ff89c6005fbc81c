"""Order lifecycle and application-matching engine for the services marketplace."""
