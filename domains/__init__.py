"""Domain modules for the Hushhly wellness app."""
