"""herald command-line interface (``herald``)."""
