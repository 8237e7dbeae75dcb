"""MindCare: a role-based hospital management portal."""
