"""Infrastructure layer: configuration, logging, gateway, notifier and stores."""
