"""cronspine command-line interface (``cronspine``)."""
