"""Pure domain types shared by the kernel, engines and modules."""
