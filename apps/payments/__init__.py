"""Payment transactions and the Click, Payme and Octo callbacks."""
