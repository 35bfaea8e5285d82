"""Wire primitives — keys, addresses, scripts and the transaction container."""
