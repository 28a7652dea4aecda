"""MCP stdio server exposing the HyperExecute job tracker."""
