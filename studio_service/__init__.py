"""Image studio service: accounts, credits and credit-metered image editing."""
