"""WP Foundry command line tooling."""
