"""Login result codes and online login verification."""
