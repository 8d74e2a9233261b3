"""MCP tool modules. Importing a module registers its tools."""
