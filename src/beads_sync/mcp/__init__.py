"""MCP (Model Context Protocol) server exposing the sync engine as tools."""
