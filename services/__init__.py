"""NetSentry pipeline services: stats, threat detection, TLS audit jobs, broadcasting."""
