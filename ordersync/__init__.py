"""3DCart to NetSuite order synchronization."""
