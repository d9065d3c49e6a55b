"""Geographic helpers and the directions provider client."""
