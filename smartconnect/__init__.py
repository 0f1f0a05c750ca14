"""SmartConnect: VPN endpoint selection and connection failover engine."""
