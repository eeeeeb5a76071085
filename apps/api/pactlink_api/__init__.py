"""PactLink secure action-token and contract-signing service."""
