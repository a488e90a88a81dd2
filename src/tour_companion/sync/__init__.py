"""Client-side sync status derivation, offline cache and offline login."""
