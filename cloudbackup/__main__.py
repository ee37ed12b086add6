from cloudbackup.cli import main

main()
