"""Document rendering and scanned-document workflows."""
