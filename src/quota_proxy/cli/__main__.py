from quota_proxy.cli.main import main


main()
