"""spin — run Terraform across a tree of dependent modules."""

__version__ = "0.1.0"
