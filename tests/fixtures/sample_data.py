"""Sample order data shared across tests."""

ORDER_ID = "ORD-2024-001"

# Flexible packaging film line
ROUTE = ["PRINTING", "LAMINATION", "COATING", "SLITTING", "PACKAGING"]
