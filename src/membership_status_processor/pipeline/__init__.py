"""Selection, recalculation and orchestration of membership status runs."""
