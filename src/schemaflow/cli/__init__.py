"""schemaflow command line interface (``schemaflow migrate|status|validate``)."""
