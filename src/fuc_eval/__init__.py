"""FUC evaluation: section parsing, templates, evaluation forms and storage."""
