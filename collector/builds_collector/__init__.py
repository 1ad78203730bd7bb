"""Durable Mythic+ rankings, reports and builds collection pipeline."""
