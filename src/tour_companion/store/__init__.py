"""Backend tree store, typed patch sets and data migrations."""
