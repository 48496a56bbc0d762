"""Order creation, status transitions and refunds."""
