"""HTTP review service and chat-layer helpers built on review_library."""
