from sigbackup.cli import main


main()
