"""Pipeline and plugins that inspect, rewrite or answer MongoDB commands."""