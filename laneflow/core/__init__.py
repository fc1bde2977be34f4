"""Core WU coordination: context, legality, lifecycle, risk and gates."""
