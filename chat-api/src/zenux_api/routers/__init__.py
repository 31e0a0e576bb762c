"""HTTP routers for the Zenux Chat API."""
