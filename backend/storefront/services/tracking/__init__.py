"""Order tracking views, dashboards and automated progression."""
