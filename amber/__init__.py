"""
Amber stores encrypted secrets in a version controlled YAML file.

Secrets are encrypted to the public key recorded in the file, so anyone can
add or update a secret. Decrypting requires the matching secret key, which is
read from the $AMBER_SECRET environment variable and never written to disk.

Create a new key pair and an empty amber.yaml:

\b
    $ amber init
    $ export AMBER_SECRET=...

Add, update or remove secrets:

\b
    $ amber encrypt DATABASE_PASSWORD hunter2
    $ echo "from stdin" | amber encrypt API_TOKEN
    $ amber generate SESSION_KEY
    $ amber remove API_TOKEN

Print secrets, or run a command with secrets in its environment:

\b
    $ amber print --style json
    $ amber exec -- ./deploy.sh

Secret values are masked in the output of 'amber exec' unless --unmasked is
given.
"""

__author__ = 'Amber contributors'
__version__ = '0.1.0'
